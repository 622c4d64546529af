# ------------------------------------------------------------------------------
# monagent - metrics source
#
# License: GNU GPL v3 (non-commercial use only)
# ------------------------------------------------------------------------------
