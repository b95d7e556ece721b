# pylint: disable=missing-docstring
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version('k3sboot')
except PackageNotFoundError:
    __version__ = '0.3.0'

# Defining some constants
KUBECONFIG_PATH = "/etc/rancher/k3s/k3s.yaml"
BOOTSTRAP_ENV_PATH = "/etc/k3sboot/k3sboot.env"
GITOPS_MANIFEST_PATH = "/etc/k3sboot/gitops-manifest.b64"
ARGOCD_MANIFEST_URL = ("https://raw.githubusercontent.com/argoproj/argo-cd/"
                       "stable/manifests/install.yaml")
