"""
Host-side operators applied on top of a foreign scan

- Scan: leaf that pulls rows from a ScanExecutor
- Filter: residual predicates
- Project: output columns
- Limit: row limit that could not be pushed to the remote
"""

from graphbridge.operators.base import Operator
from graphbridge.operators.filter import Filter
from graphbridge.operators.limit import Limit
from graphbridge.operators.project import Project
from graphbridge.operators.scan import Scan

__all__ = ["Operator", "Scan", "Filter", "Project", "Limit"]
