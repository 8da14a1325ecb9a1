import tomllib
from dataclasses import dataclass, field
from pathlib import Path

MANIFEST_FILENAME = "residentml.toml"


@dataclass
class CompilerLimits:
    """Size limits applied to untrusted markup at compile time."""

    max_markup_bytes: int = 64 * 1024
    max_nodes: int = 1500
    max_depth: int = 30
    max_components: int = 250
    extra_components: list[str] = field(default_factory=list)


@dataclass
class EvaluatorConfig:
    """Expression evaluator limits."""

    max_nodes: int = 1000


@dataclass
class PersistenceConfig:
    """Durable key/value storage for persist=true variables."""

    backend: str = "memory"  # "memory" | "sqlite"
    path: str = ".residentml/state.db"
    max_value_bytes: int = 100 * 1024


@dataclass
class HydrationConfig:
    """Island hydration runtime settings."""

    show_error_details: bool | None = None  # None = environment default


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json_file: str | None = None


@dataclass
class ProjectManifest:
    name: str = "residentml"
    compiler: CompilerLimits = field(default_factory=CompilerLimits)
    evaluator: EvaluatorConfig = field(default_factory=EvaluatorConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    hydration: HydrationConfig = field(default_factory=HydrationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_manifest(path: Path) -> ProjectManifest:
    data = tomllib.loads(path.read_text(encoding="utf-8"))

    project = data.get("project", {})
    compiler_data = data.get("compiler", {})
    evaluator_data = data.get("evaluator", {})
    persistence_data = data.get("persistence", {})
    hydration_data = data.get("hydration", {})
    logging_data = data.get("logging", {})

    compiler = CompilerLimits(
        max_markup_bytes=compiler_data.get("max_markup_bytes", 64 * 1024),
        max_nodes=compiler_data.get("max_nodes", 1500),
        max_depth=compiler_data.get("max_depth", 30),
        max_components=compiler_data.get("max_components", 250),
        extra_components=compiler_data.get("extra_components", []),
    )

    backend = persistence_data.get("backend", "memory")
    if backend not in ("memory", "sqlite"):
        raise ValueError(f"Unknown persistence backend '{backend}' in {path}")

    persistence = PersistenceConfig(
        backend=backend,
        path=persistence_data.get("path", ".residentml/state.db"),
        max_value_bytes=persistence_data.get("max_value_bytes", 100 * 1024),
    )

    return ProjectManifest(
        name=project.get("name", "residentml"),
        compiler=compiler,
        evaluator=EvaluatorConfig(max_nodes=evaluator_data.get("max_nodes", 1000)),
        persistence=persistence,
        hydration=HydrationConfig(
            show_error_details=hydration_data.get("show_error_details"),
        ),
        logging=LoggingConfig(
            level=logging_data.get("level", "INFO"),
            json_file=logging_data.get("json_file"),
        ),
    )


def find_manifest(start: Path) -> ProjectManifest:
    """Load the nearest residentml.toml at or above ``start``, or defaults."""
    current = start.resolve()
    if current.is_file():
        current = current.parent
    for directory in (current, *current.parents):
        candidate = directory / MANIFEST_FILENAME
        if candidate.exists():
            return load_manifest(candidate)
    return ProjectManifest()
