"""Goal harness: configure a goal from a spec file, then execute it.

    harness = GoalHarness()
    instance = harness.configure("add-resource", "datasource.yaml")
    result = await harness.execute(instance)
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config.inventory import ServerInventory
from .config_engine import (
    GOALS,
    ConfigEngine,
    ConfigParser,
    ConfigurationError,
    ExecuteOptions,
    ExecuteResult,
    GoalConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class GoalInstance:
    """A configured goal, ready to execute."""
    goal: str
    config: GoalConfig
    spec_path: Optional[Path] = None
    options: ExecuteOptions = field(default_factory=ExecuteOptions)


class GoalHarness:
    """Configure and execute goals against servers from the inventory."""

    def __init__(
        self,
        inventory: Optional[ServerInventory] = None,
        audit_log_path: Optional[str] = None
    ):
        self.inventory = inventory or ServerInventory()
        self.engine = ConfigEngine(self.inventory, audit_log_path)
        self.parser = ConfigParser()

    def configure(
        self,
        goal_name: str,
        spec_path: str | Path,
        server_id: Optional[str] = None,
        dry_run: bool = False
    ) -> GoalInstance:
        """
        Load a goal from its YAML spec file.

        Args:
            goal_name: ``add-resource`` or ``execute-commands``
            spec_path: YAML goal configuration
            server_id: Overrides the goal file's ``server``
            dry_run: Report what would be sent without changing anything

        Raises:
            ConfigurationError: Unknown goal or malformed spec file
        """
        if goal_name not in GOALS:
            raise ConfigurationError(
                f"Unknown goal {goal_name!r}. Must be one of: {', '.join(GOALS)}"
            )

        path = Path(spec_path)
        config = self.parser.parse_file(path)
        if server_id:
            config.server_id = server_id

        logger.info(f"Configured {goal_name} from {path}")
        return GoalInstance(
            goal=goal_name,
            config=config,
            spec_path=path,
            options=ExecuteOptions(dry_run=dry_run, audit_context=str(path)),
        )

    async def execute(self, instance: GoalInstance) -> ExecuteResult:
        """Run a configured goal; failures are reported, not raised."""
        return await self.engine.run(
            instance.goal,
            instance.config,
            options=instance.options,
        )
