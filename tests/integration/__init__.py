"""Integration tests for KTE.

These tests create real kind clusters and require:
- Docker (or another kind-supported container runtime)
- The kind binary on PATH
- KTE_INTEGRATION=1 in the environment

Tests are marked with @pytest.mark.integration and can be run with:
    KTE_INTEGRATION=1 pytest tests/integration/ -m integration

To reuse an existing cluster instead of creating one:
    KTE_FORCE_PREEXISTING=all KTE_PREEXISTING_KUBECONFIG=~/.kube/config ...

To skip integration tests:
    pytest -m "not integration"
"""
