"""
Managed Kafka e2e suite

Verification harness for a managed Kafka service: control plane clients,
CLI wrapper and a produce/consume delivery oracle for the data plane.
"""

__version__ = "0.1.0"
