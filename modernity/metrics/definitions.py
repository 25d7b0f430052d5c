"""The built-in metric set, in column order."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from ..models import UNAVAILABLE, MetricValue, SyntaxForest
from . import tally as facts
from .base import COUNT, RATIO, SCORE, Metric
from .tally import SyntaxTally

METRIC_SET_VERSION = 1

EDITIONS = {"2015": 0, "2018": 1, "2021": 2, "2024": 3}


def _package(forest: SyntaxForest) -> Optional[Dict[str, Any]]:
    if not isinstance(forest.manifest, dict):
        return None
    package = forest.manifest.get("package")
    return package if isinstance(package, dict) else None


def _ratio(numerator: int, denominator: int) -> MetricValue:
    if denominator <= 0:
        return UNAVAILABLE
    return numerator / denominator


class Edition(Metric):
    name = "edition"
    kind = COUNT
    description = "Declared language edition: 0=2015, 1=2018, 2=2021, 3=2024."

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        package = _package(forest)
        if package is None:
            return UNAVAILABLE
        edition = package.get("edition", "2015")
        if not isinstance(edition, str):
            return UNAVAILABLE
        return EDITIONS.get(edition, UNAVAILABLE)


class ReportedMsrv(Metric):
    name = "reported_msrv"
    kind = COUNT
    description = "Minor version of the declared minimum supported Rust version."

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        package = _package(forest)
        rust_version = package.get("rust-version") if package else None
        if not isinstance(rust_version, str):
            return UNAVAILABLE
        parts = rust_version.strip().split(".")
        if len(parts) < 2 or parts[0] != "1":
            return UNAVAILABLE
        return int(parts[1])


class FilesParsed(Metric):
    name = "files_parsed"
    kind = COUNT
    description = "Reachable source files that parsed cleanly."

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        return len(forest.parsed_files)


class FilesSkipped(Metric):
    name = "files_skipped"
    kind = COUNT
    description = "Reachable source files skipped as missing, unreadable or unparseable."

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        return len(forest.skipped_files)


class CountMetric(Metric):
    """A metric that reports one tally counter as is."""

    fact = ""

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        return tally[self.fact]


class RatioMetric(Metric):
    """A metric dividing one tally counter by another."""

    kind = RATIO
    numerator = ""
    denominators: Tuple[str, ...] = ()

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        return _ratio(tally[self.numerator], sum(tally[key] for key in self.denominators))


class TotalExprs(CountMetric):
    name = "total_exprs"
    fact = facts.EXPRS
    description = "Expressions in parsed files and macro expansions."


class UnsafeExprs(CountMetric):
    name = "unsafe_exprs"
    fact = facts.UNSAFE_EXPRS
    description = "Expressions inside unsafe blocks or unsafe functions."


class UnsafeFraction(RatioMetric):
    name = "unsafe_fraction"
    numerator = facts.UNSAFE_EXPRS
    denominators = (facts.EXPRS,)
    description = "Share of expressions in an unsafe context."


class StdApiUses(CountMetric):
    name = "std_api_uses"
    fact = facts.STD_USES
    description = "References to standard-library items resolved through the index."


class StdVersionSignature(Metric):
    """Bucket weights are ln(1 + n) / ln(1 + max n) rather than ln(n) / ln(max n).

    The shifted form stays finite when the largest bucket holds a single use, so values
    differ slightly from tables weighted without the shift.
    """

    name = "std_version_signature"
    kind = SCORE
    description = "Log-weighted mean stabilization minor version of the std items used."

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        buckets = {minor: count for minor, count in tally.since_minors.items() if count > 0}
        if not buckets:
            return UNAVAILABLE
        peak = math.log1p(max(buckets.values()))
        weights = {minor: math.log1p(count) / peak for minor, count in buckets.items()}
        total = sum(weights.values())
        return sum(minor * weight for minor, weight in sorted(weights.items())) / total


class NewestStdApi(Metric):
    name = "newest_std_api"
    kind = COUNT
    description = "Highest stabilization minor version among the std items used."

    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        used = [minor for minor, count in tally.since_minors.items() if count > 0]
        return max(used) if used else UNAVAILABLE


class TryOperatorShare(RatioMetric):
    name = "try_operator_share"
    numerator = facts.TRY_OPERATORS
    denominators = (facts.TRY_OPERATORS, facts.TRY_MACROS)
    description = "Share of error propagation written with '?' rather than try!."


class LetElseShare(RatioMetric):
    name = "let_else_share"
    numerator = facts.LET_ELSE
    denominators = (facts.LET_STATEMENTS,)
    description = "Share of let statements using let-else."


class AsyncFnShare(RatioMetric):
    name = "async_fn_share"
    numerator = facts.ASYNC_FUNCTIONS
    denominators = (facts.FUNCTIONS,)
    description = "Share of functions declared async."


class ImplTraitFnShare(RatioMetric):
    name = "impl_trait_fn_share"
    numerator = facts.IMPL_TRAIT_FUNCTIONS
    denominators = (facts.FUNCTIONS,)
    description = "Share of functions with impl Trait in argument or return position."


class ClosureShare(RatioMetric):
    name = "closure_share"
    numerator = facts.CLOSURES
    denominators = (facts.EXPRS,)
    description = "Share of expressions that are closures."


class DynTraitUses(CountMetric):
    name = "dyn_trait_uses"
    fact = facts.DYN_TYPES
    description = "Trait object types written with dyn."


class ConstGenericParams(CountMetric):
    name = "const_generic_params"
    fact = facts.CONST_PARAMS
    description = "Const generic parameters declared."


class MacroInvocations(CountMetric):
    name = "macro_invocations"
    fact = facts.MACRO_INVOCATIONS
    description = "Macro invocations written in the source files."


class StdMacroShare(RatioMetric):
    name = "std_macro_share"
    numerator = facts.STD_MACRO_INVOCATIONS
    denominators = (facts.MACRO_INVOCATIONS,)
    description = "Share of written macro invocations resolved to the standard library."


class LocalMacroExpansions(CountMetric):
    name = "local_macro_expansions"
    fact = facts.LOCAL_EXPANSIONS
    description = "Crate-local macro invocations expanded, nested ones included."


def default_metrics() -> List[Metric]:
    """Instantiate metric set version 1 in column order."""
    return [
        Edition(),
        ReportedMsrv(),
        FilesParsed(),
        FilesSkipped(),
        TotalExprs(),
        UnsafeExprs(),
        UnsafeFraction(),
        StdApiUses(),
        StdVersionSignature(),
        NewestStdApi(),
        TryOperatorShare(),
        LetElseShare(),
        AsyncFnShare(),
        ImplTraitFnShare(),
        ClosureShare(),
        DynTraitUses(),
        ConstGenericParams(),
        MacroInvocations(),
        StdMacroShare(),
        LocalMacroExpansions(),
    ]


def metric_names() -> List[str]:
    return [metric.name for metric in default_metrics()]


__all__ = ["EDITIONS", "METRIC_SET_VERSION", "default_metrics", "metric_names"]
