"""Base classifier abstraction.

Every classifier suggests a category and a payment method for a free-text description. The
two dimensions are independent: either may come back empty.
"""

from abc import ABC, abstractmethod

from app.core.models import ClassificationResponse, Suggestion


class BaseClassifier(ABC):
    """Abstract base class for transaction classifiers."""

    @abstractmethod
    def suggest_category(self, text: str | None) -> Suggestion | None:
        """Suggest a category name for ``text``."""

    @abstractmethod
    def suggest_payment_method(self, text: str | None) -> Suggestion | None:
        """Suggest a payment method name for ``text``."""

    def classify(self, text: str | None) -> ClassificationResponse:
        """Run both suggestions for ``text``."""
        return ClassificationResponse(
            category=self.suggest_category(text),
            payment_method=self.suggest_payment_method(text),
        )
