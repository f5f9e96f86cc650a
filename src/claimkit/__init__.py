"""claimkit: workspace locks and a shared plan-claim ledger.

Processes working in separate clones of one repository use claimkit to
make sure only one command owns a workspace at a time, and to record,
across all workspaces, who has claimed which plan.
"""

__version__ = "0.3.0"
