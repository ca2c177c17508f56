# remoteaccess/utils
#
# KEY MODULES:
# - **observer.py**: Signal / ObservableValue (status and connection streams for the host UI)
# - **async_helpers.py**: safe task creation and the per-run TaskSupervisor
# - **net.py**: interface addresses and listener sockets with port fallback
#
