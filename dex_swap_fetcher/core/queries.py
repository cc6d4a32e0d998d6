"""
GraphQL documents consumed from swap subgraphs (Aerodrome / Uniswap v2 style
schemas exposing `amount{0,1}{In,Out}` on swaps).
"""

Q_LATEST_BLOCK = """
query GetLatestBlock {
  _meta {
    block {
      number
      timestamp
    }
  }
}
"""

Q_SWAP_PAGE = """
query GetRecentSwaps($first: Int!, $skip: Int!, $minTimestamp: BigInt!) {
  swaps(first: $first, skip: $skip, orderBy: timestamp, orderDirection: asc,
        where: { timestamp_gte: $minTimestamp }) {
    id
    transaction { id blockNumber }
    timestamp
    pool {
      id
      token0 { id symbol decimals }
      token1 { id symbol decimals }
    }
    sender
    to
    amount0In
    amount0Out
    amount1In
    amount1Out
    logIndex
  }
}
"""
