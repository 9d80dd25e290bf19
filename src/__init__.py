"""
mixplan: marketing budget allocation across google, meta, tiktok and linkedin.

Finds a grid-search baseline split, simulates its outcome under prior
uncertainty, fuses alternative strategies into a confidence-weighted
ensemble and checks the result against industry benchmarks.

Quickstart::

    from pipeline import OptimizationPipeline
    pipe = OptimizationPipeline()
    plan = pipe.run(50_000, priors, Assumptions(goal="demos"))
    print(plan.summary)
"""

__version__ = "0.1.0"
