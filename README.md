# servicehub

servicehub shares *global services* between clusters. Every cluster runs one
service hub. One of them runs in **server** mode and holds the merged view of
all global services; the others run in **client** mode, upload their own
global services to the server, and download everything the other clusters
export.

A service becomes global when it carries the label
`fabedge.io/global-service: "true"` and is of type `ClusterIP`. A normal
service exports its cluster IPs as one endpoint. For a headless service
(cluster IP `None`), one endpoint per backing target is exported, with the
IPv4 and IPv6 addresses of that target merged from the service's endpoint
slices; FQDN slices are ignored.

## Installation

```
pip install .
```

## Running

```
service-hub --mode server --cluster beijing \
    --tls-key-file server.key --tls-cert-file server.crt --tls-ca-cert-file ca.crt

service-hub --mode client --cluster shanghai \
    --api-server-address https://hub.example.com:3000 \
    --tls-key-file client.key --tls-cert-file client.crt --tls-ca-cert-file ca.crt
```

The three TLS files must exist in both modes. The command exits with status 1
when an option is invalid, when setting up fails (in client mode this includes
the first heartbeat to the server) or when the API server stops with an error.
SIGINT and SIGTERM stop it cleanly.

Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `--mode` | `server` | `server` or `client` |
| `--cluster` | | cluster name, a valid RFC 1123 DNS name |
| `--zone` / `--region` | `default` | where the cluster is located (letters and digits) |
| `--health-probe-listen-address` | `0.0.0.0:3001` | serves `/healthz` and `/readyz`; `0` or empty disables it |
| `--api-server-listen-address` | `0.0.0.0:3000` | where the server listens |
| `--api-server-address` | | the server URL a client uses |
| `--tls-key-file` / `--tls-cert-file` / `--tls-ca-cert-file` | | key pair and CA used for mutual TLS |
| `--cluster-expire-duration` | `5m` | how long a silent cluster is kept; also the cleaning interval |
| `--service-import-interval` | `1m` | how often a client imports services |
| `--request-timeout` | `5s` | timeout of each request a client sends |
| `--allow-create-namespace` | `true` | create missing namespaces when needed (`true`/`false`, `t`/`f`, `1`/`0`) |
| `--v` | `0` | log verbosity; 5 or more turns on debug logging |

Durations are written as `300ms`, `5s`, `1m30s`, `2h` and so on
(`servicehub.options.parse_duration`).

## Server API

The server speaks HTTPS and requires a client certificate signed by the CA.
Each request names its cluster in the `X-FabEdge-Cluster` header, and every
request carrying that header counts as a heartbeat.

* `GET /api/heartbeat` — keep the cluster alive (204)
* `GET /api/global-services` — list all global services as JSON
* `POST /api/global-services` — upload one global service (204); 400 if the
  body is not a JSON object or lacks a name, namespace, ports or endpoints
* `DELETE /api/global-services/{namespace}/{name}` — withdraw this cluster's
  endpoints from a global service (204)

When a cluster uploads a service, its earlier endpoints in that service are
replaced by the new ones and the ports and type are taken from the upload.
A global service left with no endpoints is deleted.

A cluster that sends nothing for longer than the expire duration is handled
by `ClusterCleaner`: its endpoints are taken out of every global service it
reported.

## Using the library

```python
from servicehub.client import ServiceHubClient

with ServiceHubClient("https://hub.example.com:3000", "shanghai") as client:
    client.heartbeat()
    for service in client.download_all_global_services():
        print(service.namespace, service.name, len(service.spec.endpoints))
```

A status of 400 or above raises `servicehub.client.HttpError`.

The building blocks can be used on their own:

* `servicehub.models` — `GlobalService`, `Service`, `EndpointSlice` and their
  parts, with `global_service_to_dict` / `global_service_from_dict` for the
  JSON form.
* `servicehub.kube.InMemoryClient` — the thread-safe object store the other
  components read and write (`get`, `list`, `create`, `update`, `delete`,
  `create_or_update`).
* `servicehub.manager.GlobalServiceManager` — merges and revokes global
  services.
* `servicehub.apiserver.ApiServer` — the WSGI application of the API above.
* `servicehub.exporter.ServiceExporter` and `LostServiceRevoker` — export
  labelled services and revoke those that went away.
* `servicehub.importer.GlobalServiceImporter` — mirrors downloaded global
  services into the local store.
* `servicehub.options.ServiceHub` — wires everything together for one mode.

## What it does not do

servicehub does not connect to a real cluster API. The services, endpoint
slices, namespaces and global services it works on live in an
`InMemoryClient` inside the process: they are lost when it exits, and the
`service-hub` command starts with an empty store holding only the `default`
namespace. Services to export must be put into that store by code that uses
the library. Changes are not watched; the exporter and revoker re-check every
object every 30 seconds. There is no leader election between several server
instances.