"""Face identity building blocks (extractor/gallery/matcher).

The extractor is the only piece that touches a model; gallery and matcher are
plain numpy and can be exercised without one.
"""
