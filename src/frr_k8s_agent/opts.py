"""oslo.config options for the status exporter and the webhook.

Both entry points accept ``--config-file`` INI files as an alternative to
the YAML configuration; the options live in the ``[frr_k8s]`` section.
Services built on oslo.config can also register these options on their own
``ConfigOpts`` object.
"""

from pathlib import Path

from oslo_config import cfg

from frr_k8s.reconciler import DEFAULT_RESYNC_PERIOD
from frr_k8s.selector import DEFAULT_CACHE_SIZE

from .config import AgentConfig, KubeConfig, StatusConfig, WebhookConfig, parse_duration

GROUP = "frr_k8s"

status_opts = [
    cfg.StrOpt('node_name',
               default='',
               help='The node this daemon is running on.'),
    cfg.StrOpt('namespace',
               default='',
               help='The namespace this daemon is deployed in.'),
    cfg.StrOpt('pod_name',
               default='',
               help='The pod name of this daemon. Published BGPSessionState '
                    'resources are owned by this pod.'),
    cfg.StrOpt('poll_interval',
               default=str(int(DEFAULT_RESYNC_PERIOD)),
               help='The maximum duration between FRR polls, in seconds or '
                    'as a duration string such as "2m".'),
    cfg.IntOpt('workers',
               default=1,
               min=1,
               help='Number of reconcile worker threads.'),
]

webhook_opts = [
    cfg.IntOpt('selector_cache_size',
               default=DEFAULT_CACHE_SIZE,
               min=1,
               help='Maximum number of parsed node selectors kept in memory '
                    'by the admission validator.'),
    cfg.HostAddressOpt('webhook_host',
                       default='0.0.0.0',
                       help='Address the admission webhook listens on.'),
    cfg.PortOpt('webhook_port',
                default=9443,
                help='Port the admission webhook listens on.'),
    cfg.StrOpt('webhook_cert_file',
               help='TLS certificate served by the admission webhook.'),
    cfg.StrOpt('webhook_key_file',
               help='Private key matching webhook_cert_file.'),
]

kube_opts = [
    cfg.StrOpt('api_server',
               help='Kubernetes API server URL. Defaults to the in-cluster '
                    'service address.'),
    cfg.StrOpt('token_file',
               default='/var/run/secrets/kubernetes.io/serviceaccount/token',
               help='File holding the bearer token used against the API.'),
    cfg.StrOpt('ca_file',
               default='/var/run/secrets/kubernetes.io/serviceaccount/ca.crt',
               help='CA bundle used to verify the API server.'),
    cfg.BoolOpt('verify',
                default=True,
                help='Verify the API server certificate.'),
    cfg.FloatOpt('timeout',
                 default=10.0,
                 help='Per-request timeout, in seconds.'),
]


def register_opts(conf):
    """Register the agent options in the ``frr_k8s`` group of ``conf``."""
    conf.register_opts(status_opts, group=GROUP)
    conf.register_opts(kube_opts, group=GROUP)
    conf.register_opts(webhook_opts, group=GROUP)


def list_opts():
    return [(GROUP, status_opts + kube_opts + webhook_opts)]


def _path(value):
    return Path(value) if value else None


def load_from_conf(conf):
    """Build an :class:`AgentConfig` from a parsed ``ConfigOpts``."""
    group = getattr(conf, GROUP)
    return AgentConfig(
        status=StatusConfig(
            node_name=group.node_name,
            namespace=group.namespace,
            pod_name=group.pod_name,
            poll_interval=parse_duration(group.poll_interval),
            workers=group.workers,
        ),
        kube=KubeConfig(
            api_server=group.api_server,
            token_file=_path(group.token_file),
            ca_file=_path(group.ca_file),
            verify=group.verify,
            timeout=group.timeout,
        ),
        webhook=WebhookConfig(
            selector_cache_size=group.selector_cache_size,
            host=group.webhook_host,
            port=group.webhook_port,
            cert_file=_path(group.webhook_cert_file),
            key_file=_path(group.webhook_key_file),
        ),
    )


def load_config_files(paths, conf=None):
    """Parse the INI ``paths`` into ``conf`` (``cfg.CONF`` by default)."""
    conf = conf if conf is not None else cfg.CONF
    register_opts(conf)
    conf([], project='frr-k8s', default_config_files=[str(p) for p in paths])
    return load_from_conf(conf)
