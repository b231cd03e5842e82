"""Kopf handlers for NSX subnet resources.

This package contains handlers for:
- Subnet
- SubnetSet
- SubnetPort (lazy subnet allocation from a SubnetSet)

All handlers follow the same patterns:
- Create/resume/update/delete via Kopf decorators
- Work delegated to the shared reconcilers in state
- Status written by the reconcilers, only when it changes
"""

# Import handlers to register them with Kopf
from handlers.subnet import *  # noqa: F401, F403
from handlers.subnetset import *  # noqa: F401, F403
from handlers.subnetport import *  # noqa: F401, F403
