"""
Drift classification.

Each resource change receives exactly one category from an ordered list
of rules. The first rule whose predicate matches wins; there is no
scoring and no reordering. The default rule list is:

    1. destructive-action       -> Critical
       actions contain delete or replace
    2. protected-resource-type  -> Critical
       resource type is in the protected set
    3. allow-listed-attributes  -> SafeAutoRemediate
       no attribute added or removed, at least one value changed, and
       every changed attribute is in the allow-list
    4. default-review           -> RequiresReview
       everything else

Rules 1 and 2 together form the "destructive or protected" safety rule
and always take precedence over the allow-list: a protected network rule
whose only change is its description is still Critical.

Classification is a pure function of the change and the configuration,
so it can be spread across worker threads. ``classify_all`` returns
results in input order regardless of the worker count.

Usage:
    from driftfix.classifier import Classifier
    from driftfix.config import ClassifierConfig

    classifier = Classifier(ClassifierConfig(
        allowed_attributes={"tags", "description"},
        protected_resource_types={"aws_security_group"},
    ))
    plan = classifier.partition(changes)
"""

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from driftfix.config import ClassifierConfig
from driftfix.logging_config import get_logger, log_with_context
from driftfix.models import (
    DESTRUCTIVE_ACTIONS,
    Category,
    Classification,
    ClassifiedChange,
    ClassifiedPlan,
    ResourceChange,
)

logger = get_logger(__name__)

Predicate = Callable[[ResourceChange], bool]
Explainer = Callable[[ResourceChange], str]


@dataclass(frozen=True)
class Rule:
    """
    One classification rule.

    Attributes:
        name: Stable rule identifier, reported in every Classification
        category: Category assigned when the predicate matches
        matches: Predicate over a resource change
        explain: Builds the human-readable reason for a matched change
    """

    name: str
    category: Category
    matches: Predicate
    explain: Explainer

    def evaluate(self, change: ResourceChange) -> Classification | None:
        """
        Apply the rule to a change.

        Returns:
            Classification if the predicate matches, None otherwise
        """
        if not self.matches(change):
            return None
        return Classification(
            category=self.category,
            reason=self.explain(change),
            rule=self.name,
        )


def _names(values: set[str]) -> str:
    return ", ".join(sorted(values))


def _review_reason(config: ClassifierConfig) -> Explainer:
    def explain(change: ResourceChange) -> str:
        added = change.added_attributes()
        removed = change.removed_attributes()
        if added or removed:
            parts = []
            if added:
                parts.append(f"added: {_names(added)}")
            if removed:
                parts.append(f"removed: {_names(removed)}")
            return f"attribute set changed ({'; '.join(parts)})"
        changed = change.changed_attributes()
        if not changed:
            return "no attribute values differ; nothing safe to remediate"
        disallowed = changed - config.allowed_attributes
        return f"non-allow-listed attributes changed: {_names(disallowed)}"

    return explain


def build_default_rules(config: ClassifierConfig) -> tuple[Rule, ...]:
    """
    Build the default ordered rule list for a configuration.

    Args:
        config: Classifier safety configuration

    Returns:
        Rules in priority order, ending with a catch-all
    """

    def only_allowed_values_changed(change: ResourceChange) -> bool:
        if change.added_attributes() or change.removed_attributes():
            return False
        changed = change.changed_attributes()
        return bool(changed) and changed <= config.allowed_attributes

    return (
        Rule(
            name="destructive-action",
            category=Category.CRITICAL,
            matches=lambda change: change.is_destructive(),
            explain=lambda change: "destructive action: "
            + ", ".join(a.value for a in change.actions if a in DESTRUCTIVE_ACTIONS),
        ),
        Rule(
            name="protected-resource-type",
            category=Category.CRITICAL,
            matches=lambda change: change.resource_type in config.protected_resource_types,
            explain=lambda change: f"protected resource type '{change.resource_type}'",
        ),
        Rule(
            name="allow-listed-attributes",
            category=Category.SAFE_AUTO_REMEDIATE,
            matches=only_allowed_values_changed,
            explain=lambda change: "only allow-listed attributes changed: "
            + _names(change.changed_attributes()),
        ),
        Rule(
            name="default-review",
            category=Category.REQUIRES_REVIEW,
            matches=lambda change: True,
            explain=_review_reason(config),
        ),
    )


class Classifier:
    """
    Ordered-rule classifier for resource changes.

    Attributes:
        config: Safety configuration the rules were built from
        rules: Rules in evaluation order
    """

    def __init__(
        self,
        config: ClassifierConfig,
        rules: Sequence[Rule] | None = None,
    ) -> None:
        """
        Initialize the classifier.

        Args:
            config: Validated classifier configuration
            rules: Optional custom rule list; defaults to build_default_rules.
                A change matched by none of them falls back to RequiresReview.
        """
        self.config: ClassifierConfig = config
        self.rules: tuple[Rule, ...] = tuple(rules) if rules is not None else build_default_rules(config)
        self._fallback_reason: Explainer = _review_reason(config)

    def classify(self, change: ResourceChange) -> Classification:
        """
        Classify a single change.

        Args:
            change: Normalized resource change

        Returns:
            The classification of the first matching rule
        """
        for rule in self.rules:
            classification = rule.evaluate(change)
            if classification is not None:
                return classification
        return Classification(
            category=Category.REQUIRES_REVIEW,
            reason=self._fallback_reason(change),
            rule="fallback",
        )

    def classify_all(
        self,
        changes: Sequence[ResourceChange],
        max_workers: int = 1,
    ) -> list[ClassifiedChange]:
        """
        Classify a sequence of changes, preserving order.

        Args:
            changes: Changes in normalizer order
            max_workers: Worker threads to use; 1 classifies inline

        Returns:
            One ClassifiedChange per input change, in input order
        """
        if max_workers <= 1 or len(changes) <= 1:
            classifications = [self.classify(change) for change in changes]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                classifications = list(pool.map(self.classify, changes))

        results = []
        for change, classification in zip(changes, classifications, strict=True):
            log_with_context(
                logger,
                "debug",
                "Classified change",
                address=change.address,
                category=classification.category.value,
                rule=classification.rule,
            )
            results.append(ClassifiedChange(change=change, classification=classification))
        return results

    def partition(
        self,
        changes: Sequence[ResourceChange],
        max_workers: int = 1,
    ) -> ClassifiedPlan:
        """
        Classify changes and split them into the three categories.

        Args:
            changes: Changes in normalizer order
            max_workers: Worker threads to use for classification

        Returns:
            ClassifiedPlan whose buckets keep the input order
        """
        buckets: dict[Category, list[ClassifiedChange]] = {category: [] for category in Category}
        for item in self.classify_all(changes, max_workers=max_workers):
            buckets[item.classification.category].append(item)

        plan = ClassifiedPlan(
            safe=tuple(buckets[Category.SAFE_AUTO_REMEDIATE]),
            requires_review=tuple(buckets[Category.REQUIRES_REVIEW]),
            critical=tuple(buckets[Category.CRITICAL]),
        )

        log_with_context(
            logger,
            "info",
            "Classified plan",
            safe_count=len(plan.safe),
            review_count=len(plan.requires_review),
            critical_count=len(plan.critical),
        )
        return plan
