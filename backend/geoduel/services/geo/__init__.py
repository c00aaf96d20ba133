"""Session coordination: scoring, row store, channel and the round state machine.

Transport concerns (HTTP routes, Socket.IO handlers) live outside this
package and talk to it through ``ClientRegistry`` and ``SessionCoordinator``.
"""
