from fastapi import APIRouter, Depends

from ... import deps
from ....utils.timezone import Clock, get_server_time_info

router = APIRouter()


@router.get("")
def get_server_time(clock: Clock = Depends(deps.get_clock)):
    """Server clock, for anchoring client-side countdowns"""
    return get_server_time_info(clock)
