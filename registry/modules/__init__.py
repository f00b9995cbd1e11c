"""Built-in modules, registered in this order."""

from .bash import BashModule
from .bats import BatsModule
from .cargo import CargoModule
from .rust import RustModule

BUILTIN_MODULES = (RustModule, BashModule, CargoModule, BatsModule)

__all__ = ["BUILTIN_MODULES", "BashModule", "BatsModule", "CargoModule", "RustModule"]
