"""ETS project parsing, tree walking and flag aggregation"""
