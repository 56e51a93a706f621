"""
Health Check and System Monitoring Module

Reports on configuration and on the reachability of the attribution datastore.
"""
from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum
import traceback
from loguru import logger
from sqlalchemy.engine import Engine

from database.session import check_connection, _mask_url


class HealthStatus(str, Enum):
    """Health check status levels"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth:
    """Health check result for a single component"""

    def __init__(
        self,
        name: str,
        status: HealthStatus,
        message: str = "",
        details: Optional[Dict] = None
    ):
        self.name = name
        self.status = status
        self.message = message
        self.details = details or {}
        self.checked_at = datetime.utcnow()

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "checked_at": self.checked_at.isoformat()
        }


class HealthChecker:
    """Health checker for the attribution engine"""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine
        self.checks: List[ComponentHealth] = []

    def check_configuration(self, settings) -> ComponentHealth:
        """Check that attribution settings are usable"""
        try:
            warnings = []

            if settings.database_url.startswith("sqlite") and ":memory:" in settings.database_url:
                warnings.append("in-memory database: reports are lost on restart")
            if settings.report_max_workers == 1:
                warnings.append("report generation runs on a single worker")

            details = {
                "attribution_model": settings.attribution_model,
                "lookback_days": settings.attribution_lookback_days,
                "time_decay_half_life_hours": settings.time_decay_half_life_hours
            }

            if warnings:
                return ComponentHealth(
                    name="configuration",
                    status=HealthStatus.DEGRADED,
                    message="; ".join(warnings),
                    details=details
                )

            return ComponentHealth(
                name="configuration",
                status=HealthStatus.HEALTHY,
                message="Configuration valid",
                details=details
            )
        except Exception as e:
            logger.error(f"Configuration check failed: {e}")
            return ComponentHealth(
                name="configuration",
                status=HealthStatus.UNHEALTHY,
                message=f"Configuration check error: {str(e)}"
            )

    def check_database_connection(self, settings) -> ComponentHealth:
        """Check that the datastore answers a trivial query"""
        if self.engine is None:
            return ComponentHealth(
                name="database",
                status=HealthStatus.DEGRADED,
                message="Database engine not initialized"
            )

        details = {"url": _mask_url(settings.database_url)}
        if check_connection(self.engine):
            return ComponentHealth(
                name="database",
                status=HealthStatus.HEALTHY,
                message="Database connection successful",
                details=details
            )
        return ComponentHealth(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message="Database connection failed",
            details=details
        )

    def check_all(self, settings) -> Dict:
        """Run all health checks"""
        try:
            self.checks = [
                self.check_configuration(settings),
                self.check_database_connection(settings)
            ]

            statuses = [check.status for check in self.checks]

            if all(s == HealthStatus.HEALTHY for s in statuses):
                overall_status = HealthStatus.HEALTHY
            elif any(s == HealthStatus.UNHEALTHY for s in statuses):
                overall_status = HealthStatus.UNHEALTHY
            else:
                overall_status = HealthStatus.DEGRADED

            return {
                "status": overall_status.value,
                "timestamp": datetime.utcnow().isoformat(),
                "components": [check.to_dict() for check in self.checks],
                "summary": {
                    "total": len(self.checks),
                    "healthy": len([c for c in self.checks if c.status == HealthStatus.HEALTHY]),
                    "degraded": len([c for c in self.checks if c.status == HealthStatus.DEGRADED]),
                    "unhealthy": len([c for c in self.checks if c.status == HealthStatus.UNHEALTHY])
                }
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}\n{traceback.format_exc()}")
            return {
                "status": HealthStatus.UNHEALTHY.value,
                "timestamp": datetime.utcnow().isoformat(),
                "error": str(e),
                "components": []
            }
