"""Realtime change propagation — DataClient writes → Redis queue → Socket.IO.

Learn: Events flow through four hops:
1. MutationInterceptor sees a successful write and enqueues an event
2. EventQueue stores it durably in Redis
3. EventWorker pulls it and asks the BroadcastRegistry for the server
4. BroadcastServer emits it to every connected dashboard, which refreshes

The pipeline is strictly best-effort: a failure anywhere here never
changes the outcome of the write that caused it.
"""
