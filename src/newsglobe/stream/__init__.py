from newsglobe.stream.relay import StreamRelay, news_payload, sse_frame

__all__ = ["StreamRelay", "news_payload", "sse_frame"]
