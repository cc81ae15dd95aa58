"""Genetic optimizer over a compressed pool of the top-scoring numbers."""

from typing import Callable, List, Optional, Sequence

from .draws import K
from .rng import SeededRandom

GENE_POOL_SIZE = 24
ELITE_FRACTION = 0.1
TOURNAMENT_SIZE = 5
MUTATION_RATE = 0.1


def run_genetic_optimization(pool: Sequence[int], score_set: Callable[[Sequence[int]], float],
                             rng: SeededRandom, generations: int = 45, pop_size: int = 120,
                             checkpoint: Optional[Callable[[], None]] = None) -> List[int]:
    """Evolve 6-number sets drawn from `pool` and return the fittest.

    Args:
        pool: candidate numbers, best first (only the first 24 are used)
        score_set: fitness of a sorted set (callers share a memo across methods)
        checkpoint: invoked once per generation so callers can cancel
    """
    num_pool = list(pool[:GENE_POOL_SIZE])

    def random_gene() -> int:
        return num_pool[int(rng() * len(num_pool))]

    population = []
    for _ in range(pop_size):
        individual = []
        while len(individual) < K:
            n = random_gene()
            if n not in individual:
                individual.append(n)
        population.append(sorted(individual))

    for _ in range(generations):
        if checkpoint is not None:
            checkpoint()

        fitness = [(individual, score_set(individual)) for individual in population]
        ranked = sorted(fitness, key=lambda f: f[1], reverse=True)
        next_gen = [individual for individual, _ in ranked[:int(pop_size * ELITE_FRACTION)]]

        def tournament() -> List[int]:
            best = fitness[int(rng() * pop_size)]
            for _ in range(1, TOURNAMENT_SIZE):
                contestant = fitness[int(rng() * pop_size)]
                if contestant[1] > best[1]:
                    best = contestant
            return best[0]

        while len(next_gen) < pop_size:
            p1 = tournament()
            p2 = tournament()

            # Uniform crossover; dict keeps first-insertion order like an ordered set
            offspring = {}
            for i in range(K):
                offspring[p1[i] if rng() < 0.5 else p2[i]] = None
            while len(offspring) < K:
                offspring[random_gene()] = None
            child = sorted(offspring)

            if rng() < MUTATION_RATE:
                idx = int(rng() * K)
                new_n = random_gene()
                while new_n in child:
                    new_n = random_gene()
                child[idx] = new_n
                child.sort()

            next_gen.append(child)
        population = next_gen

    final = sorted(((ind, score_set(ind)) for ind in population), key=lambda f: f[1], reverse=True)
    return final[0][0]
