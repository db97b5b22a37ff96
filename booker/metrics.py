import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class StepMetric:
    name: str
    index: int
    start_time: float
    end_time: Optional[float] = None
    success: bool = False
    error: Optional[str] = None


@dataclass
class MetricsTracker:
    start_time: float = field(default_factory=time.time)
    steps: dict[str, StepMetric] = field(default_factory=dict)
    challenge_attempts: int = 0
    solver_submits: int = 0
    solver_polls: int = 0

    def start_step(self, name: str, index: int) -> None:
        self.steps[name] = StepMetric(name=name, index=index, start_time=time.time())

    def end_step(self, name: str, success: bool, error: Optional[str] = None) -> None:
        if name in self.steps:
            self.steps[name].end_time = time.time()
            self.steps[name].success = success
            self.steps[name].error = error

    def get_summary(self) -> dict:
        completed = sum(1 for s in self.steps.values() if s.success)
        failed = next((s for s in self.steps.values() if s.end_time and not s.success), None)

        return {
            "success": failed is None and completed > 0 and completed == len(self.steps),
            "steps_completed": completed,
            "failed_step": failed.name if failed else None,
            "error": failed.error if failed else None,
            "total_time_seconds": round(time.time() - self.start_time, 2),
            "challenge_attempts": self.challenge_attempts,
            "solver_submits": self.solver_submits,
            "solver_polls": self.solver_polls,
            "per_step": [
                {
                    "step": s.name,
                    "time_seconds": round((s.end_time or time.time()) - s.start_time, 2),
                    "success": s.success,
                    "error": s.error,
                }
                for s in sorted(self.steps.values(), key=lambda x: x.index)
            ],
        }

    def print_summary(self) -> None:
        s = self.get_summary()
        print(f"\n{'='*50}")
        print(f"BOOKING AGENT - RESULTS")
        print(f"{'='*50}")
        print(f"Outcome: {'BOOKED' if s['success'] else 'FAILED at ' + str(s['failed_step'])}")
        print(f"Steps completed: {s['steps_completed']}")
        print(f"Total time: {s['total_time_seconds']:.1f}s")
        print(f"Challenge attempts: {s['challenge_attempts']} (solver polls: {s['solver_polls']})")
        if s["error"]:
            print(f"Error: {s['error']}")
        print(f"{'='*50}\n", flush=True)
