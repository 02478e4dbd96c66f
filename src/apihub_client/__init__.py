"""
API Hub client package.

Provides:
- Resilient HTTP transport with bounded, jittered retry (httpx)
- Server-sent event decoding for streamed gateway responses
- Response classification and media download for file output
- A single dispatch entry point plus the `apihub` command line
"""
