"""
Adds the server clock and display zone to every response, so clients can
detect drift between their own clock and the authoritative exam timer.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.timezone import Clock, get_server_time_info, utc_now


class TimezoneMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, clock: Clock = utc_now):
        super().__init__(app)
        self.clock = clock

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        time_info = get_server_time_info(self.clock)
        response.headers["X-Server-Time"] = time_info["server_time_utc"]
        response.headers["X-Timezone"] = time_info["timezone"]
        response.headers["X-Timezone-Offset"] = time_info["offset"]

        return response
