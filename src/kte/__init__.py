"""kube-test-env (KTE).

Disposable kind clusters, scoped test identities and manifest reconciliation for
Kubernetes test suites.
"""

__version__ = "0.1.0"
__author__ = "Platform Engineering Team"
__license__ = "Apache-2.0"
