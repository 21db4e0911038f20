from __future__ import annotations

from rescue_ops.models import Coordinates
from rescue_ops.notifications import LoggingNotifier
from rescue_ops.store import InMemoryDocumentStore
from rescue_ops.system import DisasterResponseSystem


def main() -> None:
    system = DisasterResponseSystem(store=InMemoryDocumentStore(), notifier=LoggingNotifier())

    system.register_responder("vol-ana", "Ana Reyes", device_token="token-ana", expertise=["first_aid"])
    system.update_responder_location("vol-ana", Coordinates(14.5995, 120.9842))
    system.register_responder("vol-ben", "Ben Cruz", expertise=["swimming"])
    system.update_responder_location("vol-ben", Coordinates(14.6050, 120.9900))

    collapse = system.report_request(
        "caller-1",
        Coordinates(14.6010, 120.9860),
        hazard_type="building_collapse",
        description="Family trapped under a collapsed wall",
        people_affected=6,
        injury_level="severe",
    )
    system.report_request(
        "caller-2",
        Coordinates(14.6080, 120.9950),
        hazard_type="flooding",
        description="Water rising around the house",
        people_affected=3,
        injury_level="none",
    )

    board = system.dashboard()
    print("=== Rescue Coordination Dashboard ===")
    print(f"Open requests: {board.total_requests} ({board.aggregation.summary})")
    for cluster in sorted(board.aggregation.clusters, key=lambda c: c.urgency_score, reverse=True):
        print(
            f" - {cluster.priority.value} score={cluster.urgency_score} "
            f"victims={cluster.estimated_victims_count} resources={', '.join(sorted(cluster.required_resources))}"
        )

    route = system.optimize_route(Coordinates(14.5995, 120.9842), [r.id for r in system.open_requests()])
    print(f"\nRoute: {len(route.ordered_stops) - 1} stops, {route.total_distance_km:.2f} km, "
          f"{route.total_duration_minutes:.0f} min ({route.provenance.value})")

    assignment = system.match(collapse.id, "vol-ana")
    print(f"\nAssigned vol-ana, ETA {assignment.eta.duration_minutes} min ({assignment.eta.provenance.value})")
    system.accept(assignment.id, "vol-ana")
    done = system.complete(assignment.id, "vol-ana", notes="All six evacuated")
    print(f"Assignment {done.status.value}, request now {system.get_request(collapse.id).status.value}")


if __name__ == "__main__":
    main()
