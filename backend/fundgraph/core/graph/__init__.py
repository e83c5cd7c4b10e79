from .sink import GraphResult, GraphSink

__all__ = ["GraphResult", "GraphSink"]
