"""
Network impairment controls: added latency and simulated packet loss on inbound requests
The flag is live before the response goes out; the job only waits and clears it.
"""
from fastapi import APIRouter, Request

from biggie.duck import Milliseconds, Percent
from biggie.routes.common import JobPayload, dispatch
from biggie.simulation import LATENCY, PACKET_LOSS

router = APIRouter(prefix="/stress/network", tags=["network"])


class LatencyPayload(JobPayload):
    latency_ms: Milliseconds = 0


class PacketLossPayload(JobPayload):
    loss_percentage: Percent = 0


@router.post("/latency")
async def network_latency(payload: LatencyPayload, request: Request):
    state = request.app.state.simulation
    generation = state.activate(LATENCY, payload.latency_ms, payload.maintain_second)
    return await dispatch(
        lambda: state.clear_after(LATENCY, generation, payload.maintain_second),
        payload.run_async,
        "network latency simulation",
        {"latency_ms": payload.latency_ms, "maintain_second": payload.maintain_second},
        "network_latency",
    )


@router.post("/packet_loss")
async def packet_loss(payload: PacketLossPayload, request: Request):
    state = request.app.state.simulation
    generation = state.activate(PACKET_LOSS, payload.loss_percentage, payload.maintain_second)
    return await dispatch(
        lambda: state.clear_after(PACKET_LOSS, generation, payload.maintain_second),
        payload.run_async,
        "packet loss simulation",
        {"loss_percentage": payload.loss_percentage, "maintain_second": payload.maintain_second},
        "packet_loss",
    )
