"""VorteX: swap front end for a Convex peer."""
