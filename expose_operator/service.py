#!/usr/bin/env python3
"""
Expose Controller Service
Watches Services and keeps their external exposure (Ingress or NodePort) in sync
"""

import sys
import time
import signal
from typing import Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .annotations import EXPOSE_URL_KEY, is_exposed, service_key
from .config import ExposeConfig, load_config
from .exceptions import ExposeError, SyncError
from .strategy import ExposeStrategy, new_strategy


# Watch timeout while node ports are still being allocated
PENDING_RESYNC_SECONDS = 10
MAX_BACKOFF_SECONDS = 30

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    global shutdown_requested
    print(f"\n[shutdown] Received signal {signum}, initiating graceful shutdown...", flush=True)
    shutdown_requested = True


def load_kube_config():
    """Service account config in cluster, kubeconfig otherwise"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class ExposeControllerService:
    """Main service dispatching Service events to the configured expose strategy"""

    def __init__(self, expose_config: Optional[ExposeConfig] = None, core_v1=None, networking_v1=None,
                 strategy: Optional[ExposeStrategy] = None):
        if core_v1 is None or networking_v1 is None:
            load_kube_config()
        self.v1 = core_v1 or client.CoreV1Api()
        self.networking_v1 = networking_v1 or client.NetworkingV1Api()
        self.config = expose_config or load_config()
        self.namespace = self.config.namespace
        self.strategy = strategy or new_strategy(self.v1, self.networking_v1, self.config)

        print(f"Expose controller service initialized (exposer={self.config.exposer})", flush=True)

    def list_target(self):
        if self.namespace:
            return self.v1.list_namespaced_service, {'namespace': self.namespace}
        return self.v1.list_service_for_all_namespaces, {}

    def list_services(self):
        list_func, kwargs = self.list_target()
        return list_func(**kwargs)

    def process_service(self, service) -> bool:
        """Expose or unexpose one service; errors are reported, not raised"""
        annotations = service.metadata.annotations or {}
        try:
            if is_exposed(service):
                self.strategy.add(service)
            elif EXPOSE_URL_KEY in annotations:
                self.strategy.clean(service)
            return True
        except (ExposeError, ApiException) as e:
            print(f"ERROR: Failed to process Service {service_key(service)}: {e}", file=sys.stderr, flush=True)
            return False

    def process_deleted(self, service) -> bool:
        try:
            self.strategy.delete(service)
            return True
        except (ExposeError, ApiException) as e:
            print(f"ERROR: Failed to forget Service {service_key(service)}: {e}", file=sys.stderr, flush=True)
            return False

    def resync(self) -> Optional[str]:
        """List every service, rebuild strategy state and reconcile them all"""
        services = self.list_services()

        try:
            self.strategy.sync()
        except SyncError as e:
            # The index is rebuilt even when some deletions failed
            print(f"ERROR: {e}", file=sys.stderr, flush=True)

        failed = 0
        for service in services.items:
            if not self.process_service(service):
                failed += 1

        print(f"[sync] Reconciled {len(services.items)} Service(s), {failed} failed", flush=True)
        return services.metadata.resource_version if services.metadata else None

    def handle_event(self, event_type: str, service):
        if event_type in ('ADDED', 'MODIFIED'):
            self.process_service(service)
        elif event_type == 'DELETED':
            self.process_deleted(service)
        else:
            print(f"WARNING: Unknown event type: {event_type}", file=sys.stderr, flush=True)

    def watch_timeout(self) -> int:
        if not self.strategy.has_synced():
            return min(PENDING_RESYNC_SECONDS, self.config.resync_seconds)
        return self.config.resync_seconds


def watch_services(service: ExposeControllerService):
    """Resync, then watch Services until the watch ends; repeat until shutdown"""
    global shutdown_requested

    print(f"Expose controller watching Services in {service.namespace or 'all namespaces'}", flush=True)

    backoff = 1
    while not shutdown_requested:
        try:
            resource_version = service.resync()
        except (ApiException, ExposeError) as e:
            print(f"ERROR: Resync failed: {e}", file=sys.stderr, flush=True)
            time.sleep(backoff)
            backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
            continue

        backoff = 1
        list_func, kwargs = service.list_target()
        watcher = watch.Watch()
        try:
            stream = watcher.stream(
                list_func,
                resource_version=resource_version,
                timeout_seconds=service.watch_timeout(),
                **kwargs
            )
            for event in stream:
                if shutdown_requested:
                    print("[shutdown] Stopping watch...", flush=True)
                    watcher.stop()
                    break

                obj = event.get('object')
                if obj is None:
                    continue
                service.handle_event(str(event.get('type', '')), obj)
        except ApiException as e:
            if e.status == 410:
                print("[watch] Resource version expired, re-listing", flush=True)
            else:
                print(f"ERROR in watch loop: {e}", file=sys.stderr, flush=True)
                time.sleep(1)
        except KeyboardInterrupt:
            print("\n[shutdown] Keyboard interrupt received", flush=True)
            break

    print("[shutdown] Service stopped cleanly", flush=True)


def main():
    # Register signal handlers
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        service = ExposeControllerService()
    except ExposeError as e:
        print(f"FATAL ERROR: {e}", file=sys.stderr, flush=True)
        sys.exit(1)

    try:
        watch_services(service)
    except Exception as e:
        print(f"FATAL ERROR: {e}", file=sys.stderr, flush=True)
        import traceback
        traceback.print_exc()
        sys.exit(1)

    sys.exit(0)


if __name__ == '__main__':
    main()
