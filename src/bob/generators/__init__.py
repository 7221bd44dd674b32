"""Generators realize planned actions with external toolchains.

Each rule family has one generator. The executor talks to a generator only
through GeneratorRequest / GeneratorResponse messages.
"""

from typing import Optional, Protocol, runtime_checkable

from ..build.rules import RuleFamily
from .javac_server import JavacServerClient
from .jvm import JvmGenerator
from .messages import ActionSpec, GeneratorRequest, GeneratorResponse
from .native import NativeGenerator


@runtime_checkable
class Generator(Protocol):
    """Anything that turns a request into a response."""

    def generate(self, request: GeneratorRequest) -> GeneratorResponse: ...


def default_generators(javac_server: Optional[JavacServerClient] = None) -> dict[RuleFamily, Generator]:
    """One generator per rule family, sharing a single compile server client."""
    return {
        RuleFamily.NATIVE: NativeGenerator(),
        RuleFamily.JVM: JvmGenerator(javac_server),
    }


__all__ = [
    "ActionSpec",
    "Generator",
    "GeneratorRequest",
    "GeneratorResponse",
    "JavacServerClient",
    "JvmGenerator",
    "NativeGenerator",
    "default_generators",
]
