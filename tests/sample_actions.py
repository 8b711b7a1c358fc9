"""Handlers used only by the test suite."""

from pydantic import BaseModel, Field

from unified_api.actions.helpers import build_documentation, example, validate_with_model
from unified_api.errors import AuthorizationError, NotFoundError
from unified_api.registry import ActionHandler


class EchoParams(BaseModel):
    text: str = Field(..., min_length=1, max_length=20, description="Text to echo back")
    times: int = Field(1, ge=1, le=5, description="Repetitions")


class EchoAction(ActionHandler):
    action_type = "test.echo"
    parameter_model = EchoParams

    def required_capabilities(self):
        return ["test.echo"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        return {"echo": " ".join([context.params.text] * context.params.times)}

    def describe(self):
        return build_documentation(
            self,
            name="Echo",
            description="Returns its input.",
            examples=[example(self.action_type, "Echo once", {"text": "hi"}, {"echo": "hi"})],
        )


class DisabledAction(EchoAction):
    action_type = "test.disabled"
    enabled = False

    def required_capabilities(self):
        return []


class CrashAction(ActionHandler):
    action_type = "test.crash"

    def required_capabilities(self):
        return []

    def validate(self, params):
        return validate_with_model(None, params)

    def execute(self, context):
        raise RuntimeError("database exploded at /srv/app")

    def describe(self):
        return build_documentation(self, name="Crash", description="Always fails.")


class LeakyDenyAction(CrashAction):
    action_type = "test.leaky_deny"

    def execute(self, context):
        raise AuthorizationError(details={"api_key": "sk-live-123", "reason": "quota"})


class UnserializableAction(CrashAction):
    action_type = "test.unserializable"

    def execute(self, context):
        return {"value": object()}


class _Slotted:
    __slots__ = ("x",)


class UnencodableErrorAction(CrashAction):
    action_type = "test.unencodable_error"

    def execute(self, context):
        raise NotFoundError("gone", details={"thing": _Slotted()})


class UndocumentedParams(BaseModel):
    flag: bool = False


class UndocumentedAction(ActionHandler):
    action_type = "test.undocumented"
    version = "0.1.0"
    parameter_model = UndocumentedParams

    def required_capabilities(self):
        return []

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        return None

    def describe(self):
        return {}


class BrokenDocsAction(UndocumentedAction):
    action_type = "test.broken_docs"

    def describe(self):
        raise KeyError("missing metadata")


class DuplicatePing(CrashAction):
    action_type = "system.ping"


class BadIdentifierAction(CrashAction):
    action_type = "bad id!"


def not_a_handler(services):
    return object()


TEST_ACTIONS = (
    EchoAction,
    DisabledAction,
    CrashAction,
    LeakyDenyAction,
    UnserializableAction,
    UnencodableErrorAction,
)
