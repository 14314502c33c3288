"""
refgraph HTTP API

FastAPI surface over the reference graph: references, backlinks,
suggestions, resolution and the graph view.
"""
