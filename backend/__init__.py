############################################################
#
# switchyard - Messages API Translation Gateway
#
# __init__.py: Root package initialization and version definition
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""switchyard - Messages API gateway for heterogeneous chat providers."""

__version__ = "0.3.0"
