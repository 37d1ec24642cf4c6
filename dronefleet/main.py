from __future__ import annotations

"""
File: dronefleet/main.py
Purpose: FastAPI entrypoint for the drone delivery dispatch service.
Key responsibilities:
- Expose order, drone and delivery endpoints under /api.
- Drive optimization and the delivery simulation through DispatchService.
- Map domain errors to JSON error responses.
Key entrypoints:
- create_app()
- main()
Config/env vars:
- DRONEFLEET_HOST, DRONEFLEET_PORT
- REPOSITORY, MYSQL_*
- SIM_TICK_INTERVAL_MS, BASE_X, BASE_Y
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from dronefleet.db import build_repository
from dronefleet.errors import InvalidTransition, NotFound, NothingToAllocate, ValidationError
from dronefleet.schemas import (
    CreateDroneRequest,
    CreateOrderRequest,
    DeliveryOut,
    DeliveryStatusName,
    DroneOut,
    DroneStateName,
    DroneStatsOut,
    DroneStatusOut,
    MessageOut,
    OptimizeRequest,
    OptimizeResponse,
    OrderOut,
    OrderStatusName,
    RouteOut,
    SimulateStartRequest,
    SimulationStatusOut,
    StatsOut,
)
from dronefleet.service import DispatchService
from dronefleet.settings import settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s dronefleet %(message)s")
logger = logging.getLogger("dronefleet")

router = APIRouter()


def get_service(request: Request) -> DispatchService:
    return request.app.state.service


@router.get("/health")
def health() -> dict[str, str]:
    """Liveness/readiness check."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(req: CreateOrderRequest, service: DispatchService = Depends(get_service)) -> OrderOut:
    order = service.create_order(
        customer_location=req.customer_location.to_coordinate(),
        delivery_location=req.delivery_location.to_coordinate() if req.delivery_location else None,
        weight=req.weight,
        priority=req.priority,
    )
    return OrderOut.from_order(order)


@router.get("/api/orders", response_model=list[OrderOut])
def list_orders(
    status: Optional[OrderStatusName] = Query(default=None),
    service: DispatchService = Depends(get_service),
) -> list[OrderOut]:
    return [OrderOut.from_order(o) for o in service.list_orders(status)]


@router.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, service: DispatchService = Depends(get_service)) -> OrderOut:
    return OrderOut.from_order(service.get_order(order_id))


@router.delete("/api/orders/{order_id}", response_model=OrderOut)
def cancel_order(order_id: str, service: DispatchService = Depends(get_service)) -> OrderOut:
    """Cancel an order; delivered orders cannot be cancelled."""
    return OrderOut.from_order(service.cancel_order(order_id))


@router.post("/api/drones", response_model=DroneOut, status_code=201)
def create_drone(req: CreateDroneRequest, service: DispatchService = Depends(get_service)) -> DroneOut:
    drone = service.create_drone(
        name=req.name,
        max_weight=req.max_weight,
        max_distance=req.max_distance,
        base_location=req.base_location.to_coordinate() if req.base_location else None,
    )
    return DroneOut.from_drone(drone)


@router.get("/api/drones", response_model=list[DroneOut])
def list_drones(
    status: Optional[DroneStateName] = Query(default=None),
    service: DispatchService = Depends(get_service),
) -> list[DroneOut]:
    return [DroneOut.from_drone(d) for d in service.list_drones(status)]


@router.get("/api/drones/{drone_id}", response_model=DroneOut)
def get_drone(drone_id: str, service: DispatchService = Depends(get_service)) -> DroneOut:
    return DroneOut.from_drone(service.get_drone(drone_id))


@router.get("/api/drones/{drone_id}/status", response_model=DroneStatusOut)
def drone_status(drone_id: str, service: DispatchService = Depends(get_service)) -> DroneStatusOut:
    status = service.drone_status(drone_id)
    delivery = status["current_delivery"]
    return DroneStatusOut(
        drone=DroneOut.from_drone(status["drone"]),
        stats=DroneStatsOut(**status["stats"]),
        current_delivery=DeliveryOut.from_delivery(delivery) if delivery is not None else None,
    )


@router.post("/api/drones/{drone_id}/recharge", response_model=DroneOut)
def recharge_drone(drone_id: str, service: DispatchService = Depends(get_service)) -> DroneOut:
    return DroneOut.from_drone(service.recharge_drone(drone_id))


@router.delete("/api/drones/{drone_id}", response_model=MessageOut)
def delete_drone(drone_id: str, service: DispatchService = Depends(get_service)) -> MessageOut:
    service.delete_drone(drone_id)
    return MessageOut(message="Drone deleted")


@router.post("/api/deliveries/optimize", response_model=OptimizeResponse)
def optimize(
    req: Optional[OptimizeRequest] = None,
    service: DispatchService = Depends(get_service),
) -> OptimizeResponse:
    """Assign pending orders to available drones."""
    req = req or OptimizeRequest()
    outcome = service.optimize(
        base_location=req.base_location.to_coordinate() if req.base_location else None,
        obstacles=[o.to_obstacle() for o in req.obstacles],
    )
    return OptimizeResponse(
        message=f"{len(outcome.deliveries)} deliveries assigned to drones",
        deliveries=[DeliveryOut.from_delivery(d) for d in outcome.deliveries],
        assigned_orders=outcome.assigned,
        requested_orders=outcome.requested,
        unassigned_order_ids=[o.id for o in outcome.unassigned],
    )


@router.get("/api/deliveries", response_model=list[DeliveryOut])
def list_deliveries(
    status: Optional[DeliveryStatusName] = Query(default=None),
    service: DispatchService = Depends(get_service),
) -> list[DeliveryOut]:
    return [DeliveryOut.from_delivery(d) for d in service.list_deliveries(status)]


@router.get("/api/deliveries/stats", response_model=StatsOut)
def delivery_stats(service: DispatchService = Depends(get_service)) -> StatsOut:
    return StatsOut(**service.stats())


@router.post("/api/deliveries/simulate/start", response_model=SimulationStatusOut)
def start_simulation(
    req: Optional[SimulateStartRequest] = None,
    service: DispatchService = Depends(get_service),
) -> SimulationStatusOut:
    interval_s = service.start_simulation(req.interval_ms if req else None)
    return SimulationStatusOut(
        message="Simulation started",
        running=True,
        tick=service.engine.tick,
        interval_ms=round(interval_s * 1000),
    )


@router.post("/api/deliveries/simulate/stop", response_model=SimulationStatusOut)
def stop_simulation(service: DispatchService = Depends(get_service)) -> SimulationStatusOut:
    service.stop_simulation()
    return SimulationStatusOut(message="Simulation stopped", running=False, tick=service.engine.tick)


@router.post("/api/deliveries/simulate/step", response_model=SimulationStatusOut)
def step_simulation(service: DispatchService = Depends(get_service)) -> SimulationStatusOut:
    tick = service.step_simulation()
    return SimulationStatusOut(
        message="Simulation advanced one step",
        running=service.simulation_running,
        tick=tick,
    )


@router.post("/api/deliveries/reset", response_model=MessageOut)
def reset(service: DispatchService = Depends(get_service)) -> MessageOut:
    service.reset()
    return MessageOut(message="System reset successfully")


@router.get("/api/deliveries/{delivery_id}", response_model=DeliveryOut)
def get_delivery(delivery_id: str, service: DispatchService = Depends(get_service)) -> DeliveryOut:
    return DeliveryOut.from_delivery(service.get_delivery(delivery_id))


@router.get("/api/deliveries/{delivery_id}/route", response_model=RouteOut)
def delivery_route(delivery_id: str, service: DispatchService = Depends(get_service)) -> RouteOut:
    return RouteOut(**service.delivery_route(delivery_id))


@router.post("/api/deliveries/{delivery_id}/fail", response_model=DeliveryOut)
def fail_delivery(delivery_id: str, service: DispatchService = Depends(get_service)) -> DeliveryOut:
    """Mark a delivery failed by hand; its drone heads back to base."""
    return DeliveryOut.from_delivery(service.fail_delivery(delivery_id))


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def create_app(service: DispatchService | None = None) -> FastAPI:
    """Build the FastAPI app around a dispatch service."""
    if service is None:
        service = DispatchService(build_repository(settings), settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        service.stop_simulation()

    app = FastAPI(title="dronefleet", version="1.0.0", lifespan=lifespan)
    app.state.service = service
    app.include_router(router)

    @app.exception_handler(NotFound)
    async def not_found_handler(_request: Request, exc: NotFound) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ValidationError)
    async def validation_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(InvalidTransition)
    async def transition_handler(_request: Request, exc: InvalidTransition) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(NothingToAllocate)
    async def allocation_handler(_request: Request, exc: NothingToAllocate) -> JSONResponse:
        logger.warning("optimization rejected: %s", exc)
        return _error(400, exc)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
