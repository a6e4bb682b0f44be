"""
Management Cluster Bootstrap

Builds a Butler management cluster from nothing but a workstation and
provider credentials:

- A disposable KIND cluster hosts the Butler CRDs and controllers
- ProviderConfig and ClusterBootstrap objects describe the target cluster
- The controllers provision machines, install Talos and bootstrap Kubernetes
- Credentials are saved to ~/.butler and the KIND cluster is deleted
"""
