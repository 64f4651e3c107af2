"""Read-only selectors returning DTOs."""

from funding_kernel.selectors.allocation_selector import AllocationSelector
from funding_kernel.selectors.base import BaseSelector
from funding_kernel.selectors.contract_selector import ContractSelector

__all__ = ["AllocationSelector", "BaseSelector", "ContractSelector"]
