from __future__ import annotations

from typing import Iterable, Mapping, Sequence

SEVERITIES = ("error", "warning", "success", "section", "info", "plain")
PRECEDENCE = {severity: rank for rank, severity in enumerate(SEVERITIES)}

DEFAULT_RULES: dict[str, tuple[str, ...]] = {
    "error": ("[ERROR]", "error:", "Error"),
    "warning": ("[WARNING]", "warning:"),
    "success": ("[SUCCESS]", "successfully", "Complete"),
    "section": ("===",),
    "info": ("[INFO]", "Building", "Configuring", "Installing"),
}

DEFAULT_MILESTONES: tuple[tuple[str, int], ...] = (
    ("Checking prerequisites", 5),
    ("Installation Complete", 100),
)


class OutputClassifier:
    """Maps a raw output line to a severity by literal marker match.

    Rules are evaluated in fixed severity precedence, so a line carrying both
    an error marker and a success marker is an error.
    """

    def __init__(self, rules: Mapping[str, Iterable[str]] | None = None):
        source = DEFAULT_RULES if rules is None else rules
        unknown = sorted(set(source) - set(PRECEDENCE))
        if unknown:
            raise ValueError(f"Unknown severity: {', '.join(unknown)}")
        ordered = sorted(source.items(), key=lambda item: PRECEDENCE[item[0]])
        self.rules: tuple[tuple[str, tuple[str, ...]], ...] = tuple(
            (severity, tuple(markers)) for severity, markers in ordered if severity != "plain"
        )

    def classify(self, line: str) -> str:
        for severity, markers in self.rules:
            if any(marker in line for marker in markers):
                return severity
        return "plain"

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, Sequence[str]] | None) -> "OutputClassifier":
        rules = dict(DEFAULT_RULES)
        for severity, markers in (overrides or {}).items():
            rules[severity] = tuple(markers)
        return cls(rules)


class ProgressEstimator:
    def __init__(self, milestones: Sequence[tuple[str, int]] | None = None):
        table = DEFAULT_MILESTONES if milestones is None else milestones
        for keyword, percent in table:
            if not keyword:
                raise ValueError("Milestone keyword must be non-empty")
            if not 0 <= percent <= 100:
                raise ValueError(f"Milestone percent out of range: {keyword}={percent}")
        self.milestones: tuple[tuple[str, int], ...] = tuple(
            (keyword, int(percent)) for keyword, percent in table
        )

    def estimate(self, line: str, prior: int) -> int:
        # first match by table order wins, even when a later row is higher
        for keyword, percent in self.milestones:
            if keyword in line:
                return percent if percent > prior else prior
        return prior


def classify(line: str) -> str:
    return _DEFAULT_CLASSIFIER.classify(line)


def estimate_progress(line: str, prior: int) -> int:
    return _DEFAULT_ESTIMATOR.estimate(line, prior)


_DEFAULT_CLASSIFIER = OutputClassifier()
_DEFAULT_ESTIMATOR = ProgressEstimator()
