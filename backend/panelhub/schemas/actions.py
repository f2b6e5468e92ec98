"""Smart action request/response schemas."""

from pydantic import Field

from panelhub.schemas.common import CamelModel
from panelhub.services.smart_actions import (
    ActionScheduling,
    ActionStage,
    ActionStep,
    SchedulingType,
    SmartAction,
    StageAction,
)


class StageActionIn(CamelModel):
    switch_id: str
    action: str


class ActionStageIn(CamelModel):
    actions: list[StageActionIn] = Field(default_factory=list)


class ActionSchedulingIn(CamelModel):
    type: SchedulingType
    delay_ms: int | None = None


class ActionStepIn(CamelModel):
    """Older single-action step format."""
    switch_id: str
    action: str
    delay_ms: int = 0


class SmartActionIn(CamelModel):
    name: str
    stages: list[ActionStageIn] = Field(default_factory=list)
    scheduling: list[ActionSchedulingIn] = Field(default_factory=list)
    steps: list[ActionStepIn] | None = None

    def to_action(self) -> SmartAction:
        if not self.stages and self.steps:
            return SmartAction.from_steps(
                self.name, [ActionStep(s.switch_id, s.action, s.delay_ms) for s in self.steps]
            )
        return SmartAction(
            name=self.name,
            stages=[
                ActionStage(actions=[StageAction(a.switch_id, a.action) for a in stage.actions])
                for stage in self.stages
            ],
            scheduling=[ActionScheduling(s.type, s.delay_ms) for s in self.scheduling],
        )


class StartActionRequest(CamelModel):
    owner_id: int = 0
    action: SmartActionIn


class StartActionResponse(CamelModel):
    success: bool
    execution_id: str | None = None
    error: str | None = None


class StopActionResponse(CamelModel):
    success: bool
    curtains_stopped: bool | None = None
    error: str | None = None
