"""Runnable app references, like flake-utils' ``mkApp``.

An AppRef names one program inside a planned package. Running it means
running ``<out>/bin/<program>``; nothing about how the package was
planned leaks into the run path.
"""

from dataclasses import dataclass

from flkpkgs.cargo import PackageDerivation
from flkpkgs.errors import NoOutputArtifact, OutputNotFound


@dataclass(frozen=True)
class AppRef:
    derivation: PackageDerivation
    program: str

    @property
    def program_path(self) -> str:
        return self.derivation.program_path(self.program)

    def command(self, args: list[str] | None = None) -> list[str]:
        """argv that runs the app; identical to invoking the program directly."""
        return [self.program_path, *(args or [])]

    def as_dict(self) -> dict:
        return {"type": "app", "program": self.program_path}


def wrap(derivation: PackageDerivation, output_name: str | None = None) -> AppRef:
    """Point at ``output_name`` (default: the main program) in ``derivation``."""
    if not derivation.programs:
        raise NoOutputArtifact(f"{derivation.package.name} declares no executable outputs")
    name = derivation.main_program if output_name is None else output_name
    if name not in derivation.programs:
        raise OutputNotFound(name, derivation.programs)
    return AppRef(derivation, name)
