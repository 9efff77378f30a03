"""
Run Registry Service

Helper script to start the FastAPI funding source registry.
"""

import uvicorn

from flowrail.config import settings


def main():
    """Start the registry service."""
    print("=" * 60)
    print("  FlowRail Registry Service")
    print("  Starting FastAPI server...")
    print("=" * 60)
    print(f"\nService will run at: http://{settings.registry_host}:{settings.registry_port}")
    print(f"API docs available at: http://{settings.registry_host}:{settings.registry_port}/docs")
    print("\nPress Ctrl+C to stop\n")

    uvicorn.run(
        "flowrail.registry.service:app",
        host=settings.registry_host,
        port=settings.registry_port,
        reload=True,
        log_level="info",
    )


if __name__ == "__main__":
    main()
