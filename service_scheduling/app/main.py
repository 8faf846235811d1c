"""
Scheduling service for clinic appointment booking rules.
"""

from fastapi import Query

from shared.base_service import BaseService
from shared.retry import RetryConfig

from .rules.models import (
    RuleCheckRequest, RuleCheckResponse, RuleCreateRequest, RuleCreateResponse, RuleDescriptionResponse,
)
from .scheduling.models import (
    AvailableDatesRequest, AvailableDatesResponse, DaySlotsRequest, DaySlotsResponse, SchedulingResultSlot,
)
from .scheduling.service import BookingRulesService
from .persistence.postgres import PostgreSQLPersistence


class SchedulingService(BaseService):
    """Scheduling service implementation."""

    def __init__(self, **config_overrides):
        super().__init__("scheduling", 8020, **config_overrides)

        self.persistence = PostgreSQLPersistence(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            retry_config=RetryConfig(
                max_attempts=self.config.upstream_retry_attempts,
                base_delay=self.config.upstream_retry_base_delay,
                max_delay=self.config.upstream_retry_max_delay
            )
        )
        self.booking_rules = BookingRulesService(self.persistence, self.config, metrics=self.metrics)

        self._setup_scheduling_routes()

    def _setup_scheduling_routes(self):
        """Set up scheduling-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "scheduling",
                "message": "Clinic appointment booking rules",
                "version": "1.0.0",
                "capabilities": ["rule_check", "day_slots", "available_dates", "rule_authoring"]
            }

        @self.app.post("/scheduling/check", response_model=RuleCheckResponse)
        async def check_appointment(request: RuleCheckRequest):
            """Check one candidate booking against every rule."""
            result, rule_set_id = await self.booking_rules.check_appointment(
                request.tenant_id,
                request.to_context(),
                rule_set_id=request.rule_set_id
            )
            return RuleCheckResponse(
                is_blocked=result.is_blocked,
                blocked_by_rule_ids=result.blocked_by_rule_ids,
                rule_set_id=rule_set_id
            )

        @self.app.post("/scheduling/slots", response_model=DaySlotsResponse)
        async def get_slots_for_day(request: DaySlotsRequest):
            """Build a day's slot grid."""
            schedule, rule_set_id = await self.booking_rules.get_slots_for_day(
                request.tenant_id,
                request.to_query(),
                rule_set_id=request.rule_set_id
            )
            return DaySlotsResponse(
                day=schedule.day,
                rule_set_id=rule_set_id,
                slots=[SchedulingResultSlot.from_slot(slot) for slot in schedule.slots],
                log=schedule.log
            )

        @self.app.post("/scheduling/available-dates", response_model=AvailableDatesResponse)
        async def get_available_dates(request: AvailableDatesRequest):
            """Dates in a range on which any practitioner works."""
            dates = await self.booking_rules.get_available_dates(request)
            return AvailableDatesResponse(dates=dates)

        @self.app.get(
            "/scheduling/rules/{rule_set_id}/{rule_id}/description",
            response_model=RuleDescriptionResponse
        )
        async def describe_rule(
            rule_set_id: str,
            rule_id: str,
            tenant_id: str = Query(..., description="Tenant (practice) ID")
        ):
            """Describe a rule's condition tree."""
            return await self.booking_rules.describe_rule(tenant_id, rule_set_id, rule_id)

        @self.app.post("/scheduling/rules", response_model=RuleCreateResponse, status_code=201)
        async def create_rule(request: RuleCreateRequest):
            """Validate and store a new rule."""
            nodes = await self.booking_rules.create_rule(
                request.tenant_id,
                request.rule_set_id,
                request.condition_tree,
                enabled=request.enabled
            )
            return RuleCreateResponse(
                rule_id=nodes[0].id,
                rule_set_id=request.rule_set_id,
                node_count=len(nodes)
            )

    async def _check_dependencies(self):
        """Check scheduling service dependencies."""
        return await self.persistence.health_check()

    async def start(self):
        """Start scheduling service components."""
        await self.persistence.start()
        self.logger.info("Scheduling service started")

    async def stop(self):
        """Stop scheduling service components."""
        await self.persistence.stop()
        self.logger.info("Scheduling service stopped")


def create_app():
    """Create scheduling service application."""
    service = SchedulingService()
    return service.app


if __name__ == "__main__":
    service = SchedulingService()
    service.run()
