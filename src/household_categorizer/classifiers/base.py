from abc import ABC, abstractmethod

from household_categorizer.models import CategoryDiscoveryResult, Transaction


class Classifier(ABC):
    @abstractmethod
    def classify(self, transaction: Transaction) -> CategoryDiscoveryResult | None:
        """Attempt to categorize the transaction with local data only."""
        pass


class RemoteClassifier(ABC):
    @abstractmethod
    async def classify_batch(self, descriptions: list[str]) -> list[str]:
        """
        Return one category per description, aligned by position.

        Implementations raise ``ClassifierError`` (or a subclass) on any
        failure instead of returning a partial answer.
        """
        pass

    async def aclose(self) -> None:
        return None
