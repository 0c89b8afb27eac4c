from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, field_validator, model_validator

SEVERITY_KEYS = {"error", "warning", "success", "section", "info"}


class Toolchain(BaseModel):
    model_config = ConfigDict(extra="forbid")

    qt_version: str = "6.8"
    qt_repository: str = "https://code.qt.io/qt/qt5.git"
    llvm_mingw_version: str = "20231128"
    llvm_mingw_flavor: str = "ucrt-macos-universal"
    target_triple: str = "aarch64-w64-mingw32"


class Milestone(BaseModel):
    model_config = ConfigDict(extra="forbid")

    keyword: str = Field(min_length=1)
    percent: int = Field(ge=0, le=100)


class Output(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rules: dict[str, list[str]] = Field(default_factory=dict)
    milestones: list[Milestone] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def _known_severities(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        unknown = sorted(set(value) - SEVERITY_KEYS)
        if unknown:
            raise ValueError(f"Unknown severity in output.rules: {', '.join(unknown)}")
        return value


class Config(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str = "v1"
    recipe: str = "qt-cross"
    install_root: str = "~"
    enable_optional_module: bool = False
    parallelism: PositiveInt = 4
    verbose: bool = True
    command_timeout_s: PositiveFloat | None = None
    toolchain: Toolchain = Field(default_factory=Toolchain)
    output: Output = Field(default_factory=Output)

    @field_validator("install_root", mode="before")
    @classmethod
    def _home_when_null(cls, value: object) -> object:
        # a bare `~` in YAML loads as null
        return "~" if value is None else value

    @model_validator(mode="after")
    def _validate_config(self) -> "Config":
        if self.version != "v1":
            raise ValueError("Only version v1 is supported.")
        if not self.install_root.strip():
            raise ValueError("install_root must not be empty.")
        return self

    def root_path(self) -> Path:
        return Path(self.install_root).expanduser().resolve()
