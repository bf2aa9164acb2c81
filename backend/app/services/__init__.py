############################################################
#
# switchyard - Messages API Translation Gateway
#
# __init__.py: Services package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Services for switchyard."""

from backend.app.services.dispatcher import GatewayDispatcher
from backend.app.services.relay import RelayState, StreamingRelay

__all__ = ["GatewayDispatcher", "RelayState", "StreamingRelay"]
