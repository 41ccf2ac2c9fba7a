"""
Grid-search parameter optimizer.

Every combination of the parameter grid is run as a full backtest through an
Optuna study with a GridSampler. The best combination is the one with the
highest total return; the complete sweep is returned for inspection.
"""

import asyncio
import logging
from datetime import date
from functools import reduce
from typing import Any, Callable, Dict, List, Optional, Sequence

import optuna

from ..exceptions import BacktestError
from ..models.backtest import BacktestResult, Bar, OptimizationResult, ParameterSweepEntry
from .backtest_engine import BacktestEngine
from .strategy import DayTradingBacktestStrategy

logger = logging.getLogger(__name__)

ParameterGrid = Dict[str, Sequence[Any]]


def grid_size(grid: ParameterGrid) -> int:
    return reduce(lambda acc, values: acc * len(values), grid.values(), 1)


def parse_grid_option(specs: Sequence[str]) -> ParameterGrid:
    """Parse CLI specs like 'stop_loss=-0.02,-0.03' into a grid of numbers."""
    grid: Dict[str, List[Any]] = {}
    for spec in specs:
        if "=" not in spec:
            raise ValueError(f"Expected name=v1,v2,... got {spec!r}")
        name, raw = spec.split("=", 1)
        values = [_parse_number(v.strip()) for v in raw.split(",") if v.strip()]
        if not values:
            raise ValueError(f"No values given for {name!r}")
        grid[name.strip()] = values
    return grid


def _parse_number(text: str) -> Any:
    try:
        return int(text)
    except ValueError:
        return float(text)


class GridSearchOptimizer:
    """Exhaustive search over a parameter grid, one backtest per combination."""

    def __init__(
        self,
        engine: BacktestEngine,
        strategy: DayTradingBacktestStrategy,
        bars: Dict[str, Sequence[Bar]],
        parameter_grid: ParameterGrid,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        objective: Callable[[BacktestResult], float] = lambda r: r.performance.total_return_percent,
    ):
        if not parameter_grid:
            raise ValueError("parameter_grid must not be empty")
        for name, values in parameter_grid.items():
            if not values:
                raise ValueError(f"No values for parameter {name!r}")

        self.engine = engine
        self.strategy = strategy
        self.bars = bars
        self.parameter_grid = {name: list(values) for name, values in parameter_grid.items()}
        self.start_date = start_date
        self.end_date = end_date
        self.objective = objective
        self.sweep: List[ParameterSweepEntry] = []

    def _objective_factory(self) -> Callable[[optuna.Trial], float]:
        def objective(trial: optuna.Trial) -> float:
            params = {
                name: trial.suggest_categorical(name, values)
                for name, values in self.parameter_grid.items()
            }
            logger.info(f"Trial {trial.number}: {params}")
            try:
                strategy = self.strategy.with_parameters(**params)
                result = asyncio.run(self.engine.run_backtest(
                    strategy, self.bars, start_date=self.start_date, end_date=self.end_date
                ))
            except Exception as e:
                logger.warning(f"Trial {trial.number} failed: {e}")
                trial.set_user_attr("error", str(e))
                self.sweep.append(ParameterSweepEntry(iteration=trial.number, parameters=params, error=str(e)))
                raise

            self.sweep.append(ParameterSweepEntry(iteration=trial.number, parameters=params, performance=result))
            score = self.objective(result)
            logger.info(f"Trial {trial.number} ended: total return {score:.2f}%")
            return score

        return objective

    def optimize(self) -> OptimizationResult:
        """
        Run every grid combination.

        Must be called outside a running event loop; each trial drives its own
        backtest with asyncio.run.
        """
        self.sweep = []
        total = grid_size(self.parameter_grid)
        logger.info(f"Grid search over {total} combinations: {list(self.parameter_grid)}")

        optuna.logging.set_verbosity(optuna.logging.WARNING)
        study = optuna.create_study(
            direction="maximize",
            sampler=optuna.samplers.GridSampler(self.parameter_grid),
        )
        study.optimize(self._objective_factory(), n_trials=total, catch=(Exception,))

        successful = [e for e in self.sweep if e.performance is not None]
        if not successful:
            raise BacktestError("Optimization failed: no parameter combination completed")

        best = max(successful, key=lambda e: self.objective(e.performance))
        logger.info(f"Best parameters (trial {best.iteration}): {best.parameters}")

        return OptimizationResult(
            best_parameters=best.parameters,
            best_performance=best.performance,
            parameter_sweep=sorted(self.sweep, key=lambda e: e.iteration),
            total_iterations=len(self.sweep),
            best_iteration=best.iteration,
        )
