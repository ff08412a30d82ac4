"""ComputeFabric API Module.

Responsibility: Provides the FastAPI-based REST surface, persistence models and the
service layer (job store, job runner, settlement) for the scheduling engine.
"""
