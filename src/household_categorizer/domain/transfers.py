from household_categorizer.models import CategoryGroup, CategoryDiscoveryResult, Transaction, TransferDirection


def transfer_direction(transaction: Transaction, result: CategoryDiscoveryResult) -> TransferDirection | None:
    """Money in or out for transfer results, from the amount sign alone."""
    if result.group_name != CategoryGroup.TRANSFER:
        return None
    if transaction.amount > 0:
        return TransferDirection.IN
    if transaction.amount < 0:
        return TransferDirection.OUT
    return None
