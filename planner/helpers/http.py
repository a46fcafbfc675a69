from aiohttp import (
    AsyncResolver,
    ClientSession,
    ClientTimeout,
    DummyCookieJar,
    TCPConnector,
)

from planner.helpers.cache import lru_acache


@lru_acache()
async def aiohttp_session() -> ClientSession:
    """
    Create an AIOHTTP session.

    Object is cached for performance. Overall timeout stays above the channel send timeout, which is the one enforced.

    Returns a `ClientSession` instance.
    """
    return ClientSession(
        # Outgoing calls are stateless API calls
        cookie_jar=DummyCookieJar(),
        trust_env=True,
        # Performance
        connector=TCPConnector(resolver=AsyncResolver()),
        # Reliability
        timeout=ClientTimeout(
            connect=5,
            total=60,
        ),
    )
