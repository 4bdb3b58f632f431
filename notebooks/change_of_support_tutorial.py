import matplotlib.pyplot as plt
import seaborn as sns

from ipp_abundance.config.simulation_config import SimulationConfig
from ipp_abundance.modeling.bayesian import AbundanceModel
from ipp_abundance.modeling.diagnostics import plot_unit_map, summarize_posterior
from ipp_abundance.pipeline.aggregate import aggregate_units, reorder_cells
from ipp_abundance.pipeline.grid import build_cell_grid, covariate_columns, simulate_covariates
from ipp_abundance.pipeline.partition import (
    assign_cells_to_polygons,
    random_unit_polygons,
    unit_adjacency,
)
from ipp_abundance.pipeline.reindex import reindex_cells
from ipp_abundance.pipeline.simulate import make_rng, sample_sites, simulate_abundance


def main() -> None:
    # Set plot style
    sns.set_theme(style="whitegrid")
    config = SimulationConfig(n_rows=20, n_cols=20, n_units=16, n_sites=60)
    rng = make_rng(config.seed)

    print("## 1. Simulate an Inhomogeneous Poisson abundance field")
    cells = build_cell_grid(config.n_rows, config.n_cols)
    cells = simulate_covariates(cells, config.n_covariates, rng, config.length_scale)
    covariates = covariate_columns(cells)
    cells = simulate_abundance(cells, config.intercept, config.coefficients, rng)
    print(cells[["cell_id", *covariates, "rate", "abundance"]].head())

    print("\n## 2. Site-level Poisson regression")
    # Only a sample of cells is surveyed; counts there are exact
    sites = sample_sites(cells, config.n_sites, rng)
    site_model = AbundanceModel(target_col="count")
    site_model.build_site_model(sites, covariates)
    site_model.sample(draws=500, tune=500, chains=2, cores=1, random_seed=config.seed)
    print(summarize_posterior(site_model.trace, site_model.monitors))

    print("\n## 3. Change of support: counts reported by irregular units")
    polygons = random_unit_polygons(cells, config.n_units, rng)
    assignment = assign_cells_to_polygons(cells, polygons)
    cells["unit_id"] = assignment.reindex(cells["cell_id"]).to_numpy()

    # Renumber cells so each unit is one contiguous block; the model only
    # needs each unit's (min, max) bounds
    reindexing = reindex_cells(assignment, units=polygons.keys())
    print(reindexing.intervals.head())

    cells_reindexed = reorder_cells(cells, reindexing)
    units = aggregate_units(cells, reindexing, covariates, response_col="abundance")
    units = units.rename(columns={"abundance": "count"})
    print(units.head())

    plot_unit_map(cells, "abundance", title="Abundance and reporting units")
    plt.show()

    agg_model = AbundanceModel(target_col="count")
    agg_model.build_aggregated_model(cells_reindexed, units, covariates)
    agg_model.sample(draws=500, tune=500, chains=2, cores=1, random_seed=config.seed)
    print(summarize_posterior(agg_model.trace, agg_model.monitors))

    print("\n## 4. Sketch: spatially autocorrelated unit effects")
    edges = unit_adjacency(cells, unit_order=list(reindexing.intervals.index))
    spatial_model = AbundanceModel(target_col="count")
    spatial_model.build_spatial_model(cells_reindexed, units, edges, covariates)
    spatial_model.sample(draws=500, tune=500, chains=2, cores=1, random_seed=config.seed)

    print("\n## 5. Convergence diagnostics")
    print(summarize_posterior(spatial_model.trace, spatial_model.monitors))
    spatial_model.plot_trace()
    plt.show()


if __name__ == "__main__":
    main()
