"""Sans-I/O session manager for the Discord gateway.

Sans-I/O means that the session manager implements no I/O (network) and
operates purely on the inputs given, returning the effects to perform. A
reference asyncio network layer is provided by `GatewayRunner`.

It means that this implementation can be reused for libraries implemented in a
threading fashion or asyncio/trio/curio.
"""

from ._codec import *
from ._conn import *
from ._errors import *
from ._models import *
from ._opcode import *
from ._runner import *
from ._session import *
from ._translate import *
